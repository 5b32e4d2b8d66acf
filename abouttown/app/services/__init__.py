"""Anti-abuse services used by the admission stages."""
