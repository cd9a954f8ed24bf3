"""Shared utilities: errors, logging, configuration and notifications"""
