"""Booking domain - price book, quotes, coupons and seller arrival windows"""
