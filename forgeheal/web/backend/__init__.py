"""
ForgeHeal web backend: REST tool dispatch and a WebSocket OODA event stream.
"""
