"""Test package for the parking session engine"""
