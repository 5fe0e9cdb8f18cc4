"""
ForgeHeal web interface.
"""
