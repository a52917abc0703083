"""Architecture validation tests.

Layer dependency direction and codebase conventions for scenario_grader.
"""
