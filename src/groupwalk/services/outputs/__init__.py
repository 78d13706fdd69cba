"""Proposal serializers."""
