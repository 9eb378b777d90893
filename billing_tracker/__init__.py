"""
Household Billing Tracker - Source Package

Client-side billing state and synchronization engine for a household
utility-billing tracker: meter readings in, projected bill and running
balance out, persisted to a remote store in the background.

DESIGN PRINCIPLES:
1. Local edits are immediate, persistence is eventual
2. Sync faults never block editing
3. Derived figures are recomputed on read, never stored
4. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Household Billing Tracker Team"
