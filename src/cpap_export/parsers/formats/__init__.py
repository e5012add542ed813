"""Binary file formats: EDF/EDF+ and SpO2 Assistant exports."""
