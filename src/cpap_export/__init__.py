"""
cpap-export: CPAP and pulse-oximetry session export

Discovers therapy sessions on ResMed SD cards and SpO2 Assistant exports and
reconciles each session's files into a single record-aligned EDF+ file.
"""
