"""Myers Construct estimator - Cloud Functions.

This package contains the Python Cloud Functions for the Myers Construct
estimate-synthesis pipeline: material identification, live market
grounding, historical bid weighting and structured estimate synthesis.
"""

__version__ = "1.0.0"
