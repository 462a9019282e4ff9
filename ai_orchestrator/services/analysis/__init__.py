"""
Content analysis: pure text metrics and the combined metrics + provider report.
"""
