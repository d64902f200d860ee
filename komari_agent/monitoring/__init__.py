"""Collectors for host metrics and static system information."""