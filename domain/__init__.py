"""Guest pass domain: models, token codec and lifecycle engine"""
