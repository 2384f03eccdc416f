"""Core components for network simulation.

This module contains the binary codec primitives, address types, frame codec,
tables, sockets, topology graph and the per-device frame-processing engine,
together with the NetworkSimulator that owns them.
"""
