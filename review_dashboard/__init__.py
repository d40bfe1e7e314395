"""
Merge Request Review Dashboard

A backend service that tracks GitLab merge requests, generates AI code
reviews for them and stores the results for a dashboard front-end.
"""

__version__ = "1.0.0"
__author__ = "Review Dashboard Team"
