"""Dispatch core services"""
