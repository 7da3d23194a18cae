"""Scheduling domain - photographer assignment, Go Anytime windows and the appointment waitlist"""
