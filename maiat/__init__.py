"""
Maiat — Trust Scoring Service for Agents

Trust scores for on-chain projects, AI agents and merchants, sold to
autonomous agents per query over x402 micropayments.
"""
__version__ = "1.0.0"
