"""
Core Package
Settings, YAML config, logging and provider validation
"""
