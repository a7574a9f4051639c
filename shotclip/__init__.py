"""ShotClip: cut detected shots out of source videos and publish them as clips"""
