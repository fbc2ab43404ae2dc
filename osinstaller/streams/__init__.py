"""Bounded, teeing and decompressing streams, digests, BLS, Ignition and initrd helpers."""