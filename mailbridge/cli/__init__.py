"""MailBridge CLI"""
