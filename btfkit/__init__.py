"""Parse, inspect, copy and relocate BPF Type Format (BTF) data."""

__version__ = "0.1.0"