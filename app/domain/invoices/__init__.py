"""Invoices domain - agent invoices, bulk payment, PDF and email delivery"""
