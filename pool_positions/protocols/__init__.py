"""Lending pool facades."""
