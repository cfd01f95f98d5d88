"""
Terrain viewer test suite

Structure:
- unit/: Unit tests for individual components
- integration/: Viewer control loop driven end to end with stubbed network
"""
