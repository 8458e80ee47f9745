"""Dental Vitals - marketing analytics and Vital Signs scoring for dental practices"""

__version__ = "1.0.0"
