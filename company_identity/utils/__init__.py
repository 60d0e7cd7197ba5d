"""Shared utilities: counters, hashing, tqdm-aware logging."""
