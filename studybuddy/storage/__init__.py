"""Profile and match storage backends"""
