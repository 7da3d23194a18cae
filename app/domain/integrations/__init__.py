"""Integrations domain - floor plans, HDR, airspace, MLS, payouts, content and outbound webhooks"""
