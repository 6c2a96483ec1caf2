"""
Probe layer — read-only checks of current system state.

Probes never mutate anything and are safe to call repeatedly. Those
that ask an external process return ``None`` when the answer cannot
be determined; the planner treats that as "not satisfied".
"""
