"""HTTP API, chat handling and session management"""
