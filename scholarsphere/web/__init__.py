"""
Support for exposing repository services via web interfaces
"""
