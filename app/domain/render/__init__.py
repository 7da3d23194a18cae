"""Render domain - template registry, image and carousel rendering"""
