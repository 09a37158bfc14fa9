"""Vehicle Usage Integrity Engine - Services"""
