"""
Cycling Route Planner Test Suite

Structure:
- unit/: Unit tests for individual components (detours, selection, tiles, caches)
- integration/: Route planning through the full cache stack with fake HTTP backends
"""
