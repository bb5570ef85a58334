"""Profile and pairing data models"""
