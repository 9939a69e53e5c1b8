"""Database sessions for rowferry"""
