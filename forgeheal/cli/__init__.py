"""
ForgeHeal command-line interface.
"""
