"""
Agent version information for the Host Telemetry Agent.

Version follows semantic versioning (https://semver.org/): MAJOR.MINOR.PATCH
"""

# Version components
MAJOR = 1
MINOR = 0
PATCH = 0

# Full version string
__version__ = f"{MAJOR}.{MINOR}.{PATCH}"
__app_name__ = "Host Telemetry Agent"
