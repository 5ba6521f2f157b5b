"""Adapters for the database and external providers"""
