"""Business domains of the scheduling service"""
