"""
Authorization decision engine application package.
"""
