"""
E-Learning Application Models Registry

This module serves as the central models registry for the E-Learning application.
It imports and exposes the models of the logical submodules so they are
registered with Django's ORM under the ``elearning`` app label.

Architecture:
- courses/: Course catalog with authoritative prices

Author: DSP Development Team
Version: 1.0.0
"""

# Import all course catalog models for registration with Django ORM
from .courses.models import *
