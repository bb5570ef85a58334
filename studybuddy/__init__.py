"""Study Buddy - study partner matchmaking with rate-limited introductions"""
