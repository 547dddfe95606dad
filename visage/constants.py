"""
Visage - Constants and Configuration Defaults

This module contains all constant values used throughout the package:
- Document flag keys and namespaces
- Neutral defaults for true-form properties
- Dynamic ring effect bits and default colors
- Effect tags and playback defaults
- Keys that count as visual edits for reconciliation
"""

# ======================================================================
# NAMESPACES & FLAG KEYS
# ======================================================================
# All Visage bookkeeping lives under flags.<DATA_NAMESPACE> on an entity document

DATA_NAMESPACE = "visage"

FLAG_STACK = "activeStack"
FLAG_LEGACY_STACK = "stack"          # Pre-identity builds stored the stack here
FLAG_IDENTITY = "identity"
FLAG_SNAPSHOT = "originalState"

# Option passed with every write issued by the compositor (self-loop guard)
UPDATE_OPTION = "visage_update"

# ======================================================================
# LAYER KINDS
# ======================================================================

KIND_IDENTITY = "identity"
KIND_OVERLAY = "overlay"
LAYER_KINDS = (KIND_IDENTITY, KIND_OVERLAY)

SOURCE_LOCAL = "local"
SOURCE_GLOBAL = "global"

# ======================================================================
# TRUE-FORM DEFAULTS
# ======================================================================
# Used when a document (or stored snapshot) is missing a field

DEFAULT_SCALE = 1.0
DEFAULT_WIDTH = 1.0
DEFAULT_HEIGHT = 1.0
DEFAULT_STATUS_CLASS = 0

# Status classes (disposition) as stored on the document
STATUS_SECRET = -2
STATUS_HOSTILE = -1
STATUS_NEUTRAL = 0
STATUS_FRIENDLY = 1

# ======================================================================
# DYNAMIC RING
# ======================================================================

RING_PULSE = 2
RING_GRADIENT = 4
RING_WAVE = 8
RING_INVISIBILITY = 16

DEFAULT_RING_COLOR = "#FFFFFF"
DEFAULT_RING_BACKGROUND = "#000000"
DEFAULT_SUBJECT_SCALE = 1.0

# ======================================================================
# EFFECTS
# ======================================================================

EFFECT_VISUAL = "visual"
EFFECT_AUDIO = "audio"

Z_ABOVE = "above"
Z_BELOW = "below"

# Tag prefix shared by every process this package starts
TAG_PREFIX = "visage-"
IDENTITY_TAG = "visage-base"
OVERLAY_TAG_PREFIX = "visage-mask-"

# Looping visuals run for a year instead of forever so a scene refresh
# never sees an effect without an end time
LOOP_DURATION_MS = 31536000000

DEFAULT_AUDIO_VOLUME = 0.8
FADE_STEP_MS = 20

# ======================================================================
# RECONCILIATION
# ======================================================================
# Document keys whose edits are redirected into the snapshot

VISUAL_KEYS = (
    "name", "displayName", "disposition", "width", "height",
    "texture", "ring",
)

# Edits touching these keys bypass reconciliation entirely
BYPASS_KEYS = ("hidden",)

# ======================================================================
# MASK LIBRARY
# ======================================================================

# Document key naming the owner whose local masks an entity can use
OWNER_KEY = "actorId"

# Length of generated mask ids
MASK_ID_LENGTH = 16

DEFAULT_MASK_ID = "default"
DEFAULT_MASK_LABEL = "Default"
NEW_MASK_LABEL = "New Mask"
