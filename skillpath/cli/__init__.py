"""
CLI: developer commands for inspecting skill graphs and fitting parameters.
"""
