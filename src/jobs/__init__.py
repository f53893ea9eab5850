"""Scraping job lifecycle and execution"""
