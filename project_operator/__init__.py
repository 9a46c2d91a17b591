"""
Project operator: provisions tenant environments for Project resources.
"""

PROJECT_NAME: str = "project-operator"
VERSION: str = "0.1.0"  # replace in CI/CD pipeline
