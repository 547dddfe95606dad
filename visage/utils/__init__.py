"""Visage utility helpers (logging, configuration, paths, documents)"""
