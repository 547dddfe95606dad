"""Headless Visage - CLI entry point.

Applies, removes and reverts masks on the entities of a JSON scene file,
using a JSON mask library. The scene file is rewritten in place.

Scene file shape:
    {"entities": {"<entity id>": {<entity document>}, ...}}

Usage:
    python -m visage.headless SCENE LIBRARY apply ENTITY MASK [--identity|--overlay] [--clear]
    python -m visage.headless SCENE LIBRARY remove ENTITY MASK
    python -m visage.headless SCENE LIBRARY revert ENTITY
    python -m visage.headless SCENE LIBRARY list ENTITY

Examples:
    python -m visage.headless scene.json masks.json apply token-1 wolf-form --identity
    python -m visage.headless scene.json masks.json list token-1 -v
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from visage.errors import VisageError
from visage.services.mask_library import MaskLibrary
from visage.services.persistence import InMemoryDocumentStore
from visage.services.stack_controller import Visage
from visage.utils.config import load_settings

logger = logging.getLogger(__name__)


def _load_scene(path: str) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        scene = json.load(f)
    if not isinstance(scene.get('entities'), dict):
        raise ValueError(f"{path} has no 'entities' mapping")
    return scene


def _save_scene(path: str, scene: dict):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(scene, f, indent=2)


async def _run(args, visage: Visage) -> bool:
    if args.command == 'apply':
        as_identity = None
        if args.identity:
            as_identity = True
        elif args.overlay:
            as_identity = False
        return await visage.apply(args.entity, args.mask, as_identity=as_identity,
                                  clear_stack=args.clear)
    if args.command == 'remove':
        return await visage.remove(args.entity, args.mask)
    if args.command == 'revert':
        return await visage.revert(args.entity)

    for entry in await visage.get_available_masks(args.entity):
        active = await visage.is_active(args.entity, entry['id'])
        marker = '*' if active else ' '
        print(f" {marker} {entry['id']:<20} {entry['kind']:<9} {entry['source']:<7} {entry['label']}")
    return True


async def _execute(args, store: InMemoryDocumentStore, visage: Visage):
    """Run the command and collect the documents to write back"""
    ok = await _run(args, visage)
    documents = {}
    if store.writes:
        for entity_id in args.entity_ids:
            documents[entity_id] = await store.read(entity_id)
    return ok, documents


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Apply Visage masks to the entities of a JSON scene file.',
    )
    parser.add_argument('scene', help='Path to the scene JSON file (rewritten in place).')
    parser.add_argument('library', help='Path to the mask library JSON file.')
    parser.add_argument('-c', '--config', default=None, help='Settings JSON file.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging.')

    commands = parser.add_subparsers(dest='command', required=True)

    apply_cmd = commands.add_parser('apply', help='Apply a mask.')
    apply_cmd.add_argument('entity')
    apply_cmd.add_argument('mask')
    kind = apply_cmd.add_mutually_exclusive_group()
    kind.add_argument('--identity', action='store_true', help='Apply as the identity layer.')
    kind.add_argument('--overlay', action='store_true', help='Apply as an overlay.')
    apply_cmd.add_argument('--clear', action='store_true', help='Discard all active layers first.')

    remove_cmd = commands.add_parser('remove', help='Remove an active mask.')
    remove_cmd.add_argument('entity')
    remove_cmd.add_argument('mask')

    revert_cmd = commands.add_parser('revert', help='Restore the true form.')
    revert_cmd.add_argument('entity')

    list_cmd = commands.add_parser('list', help='List masks available to an entity.')
    list_cmd.add_argument('entity')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the CLI

    Returns:
        0 on success, 1 when the operation was a no-op (unknown mask or
        layer), 2 on errors
    """
    args = build_parser().parse_args(argv)

    settings = load_settings(args.config)
    if args.verbose:
        settings.log_level = 'DEBUG'
    settings.apply()

    scene_path = os.path.abspath(args.scene)
    if not os.path.isfile(scene_path):
        print(f"Error: Scene file not found: {scene_path}")
        return 2

    try:
        scene = _load_scene(scene_path)
    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        return 2

    library = MaskLibrary(settings=settings)
    library.load(os.path.abspath(args.library))
    store = InMemoryDocumentStore(scene['entities'])
    visage = Visage(store, library, settings=settings)
    args.entity_ids = list(scene['entities'])

    try:
        ok, documents = asyncio.run(_execute(args, store, visage))
    except (VisageError, KeyError) as e:
        print(f"Error: {e}")
        if args.verbose:
            logger.exception("Command failed")
        return 2

    if documents:
        scene['entities'].update(documents)
        _save_scene(scene_path, scene)

    return 0 if ok else 1


if __name__ == '__main__':
    sys.exit(main())
