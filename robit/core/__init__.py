"""Process-wide settings and logging setup shared by every robit subpackage."""
