"""Telephony audio helpers.

Twilio Media Streams deliver 8 kHz G.711 mu-law; the conversational engine is
configured for the same format, so audio is relayed without transcoding.
Decoding to PCM16/WAV is only needed for batch transcription.
"""
