"""Core building blocks: errors, security, dependencies, plan catalog"""
